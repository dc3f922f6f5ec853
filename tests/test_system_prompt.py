from __future__ import annotations

from datetime import date

from vaultkeeper.engine.system_prompt import build_system_prompt, get_today_date

TODAY = date(2026, 10, 18)


def test_today_date() -> None:
    assert get_today_date(TODAY) == "Sunday, October 18, 2026 (2026-10-18)"


def test_base_prompt() -> None:
    prompt = build_system_prompt(today=TODAY)
    assert prompt.startswith("Today is Sunday, October 18, 2026 (2026-10-18).")
    assert "# Critical Path Rules" in prompt
    assert "Context files: [path/to/file1.md, path/to/file2.md]" in prompt
    assert "# Allowed Export Paths" not in prompt
    assert "# Custom Instructions" not in prompt


def test_export_paths_listed_once() -> None:
    prompt = build_system_prompt(["~/Desktop", " ~/Desktop ", "", "/srv/out"], today=TODAY)
    assert "# Allowed Export Paths" in prompt
    assert prompt.count("- ~/Desktop\n") == 1
    assert "- /srv/out\n" in prompt
    assert "write-only" in prompt


def test_custom_instructions_appended() -> None:
    prompt = build_system_prompt([], "  Use British spelling.  ", today=TODAY)
    assert prompt.endswith("# Custom Instructions\n\nUse British spelling.")
    assert build_system_prompt([], "   ", today=TODAY) == build_system_prompt(today=TODAY)
