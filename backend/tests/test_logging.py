"""Tests for storyglossary.core.logging context enrichment."""

from __future__ import annotations

from storyglossary.core.logging import add_context_vars, chunk_index_var, project_id_var


class TestAddContextVars:

    def test_unset_vars_are_skipped(self):
        assert add_context_vars(None, "info", {"event": "x"}) == {"event": "x"}

    def test_set_vars_are_added(self):
        project_token = project_id_var.set("p1")
        chunk_token = chunk_index_var.set(0)
        try:
            entry = add_context_vars(None, "info", {"event": "x"})
        finally:
            chunk_index_var.reset(chunk_token)
            project_id_var.reset(project_token)
        assert entry == {"event": "x", "project_id": "p1", "chunk_index": 0}

    def test_explicit_keys_win(self):
        token = project_id_var.set("p1")
        try:
            entry = add_context_vars(None, "info", {"event": "x", "project_id": "other"})
        finally:
            project_id_var.reset(token)
        assert entry["project_id"] == "other"
