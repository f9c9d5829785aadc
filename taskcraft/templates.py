"""Task templates: markdown skeletons a new task can start from.

Templates live in the templates directory of the project (see
taskcraft.paths): ``{execution root}/.tasks/.templates`` when it exists,
otherwise ``~/.taskcraft/templates``. Only files named ``NN_type.md`` are
templates; the number orders them and the type names them.

A template is a task body without a header: ``## Section`` blocks, with
``[Title]`` or ``<<TITLE>>`` placeholders for the task title. A leading
YAML header block and a ``# Title`` line are ignored.

Usage:
    from taskcraft.templates import apply_template, get_template, list_templates

    for info in list_templates(ctx):
        print(info.id, info.name)
    document = apply_template(get_template(ctx, "bug"), "Login fails on Safari")
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from taskcraft.paths import PathContext, PathType, get_templates_path, resolve_existing_path
from taskcraft.task_document import (
    ChecklistItem,
    TaskDocument,
    ensure_required_sections,
    parse_document,
)
from taskcraft.task_schema import TYPE_VALUES, TaskType

logger = logging.getLogger(__name__)

TEMPLATE_FILE_RE = re.compile(r"^(\d+)_(\w+)\.md$")

_TITLE_PLACEHOLDER_RE = re.compile(r"<<\s?(?:FEATURE\s)?TITLE\s?>>|\[Title\]", re.IGNORECASE)
_TITLE_LINE_RE = re.compile(r"^#\s+\S")

DEFAULT_TEMPLATES: dict[str, str] = {
    "01_feature.md": """\
## Instruction

Describe the feature [Title] adds and who it is for.

## Tasks

- [ ] Agree on the scope
- [ ] Implement
- [ ] Write tests
- [ ] Update the docs

## Deliverable

What exists when [Title] is done.

## Acceptance Criteria

- [ ] The feature works end to end
""",
    "02_bug.md": """\
## Instruction

Fix: [Title]

## Steps to Reproduce

1.

## Expected Behavior

## Actual Behavior

## Tasks

- [ ] Reproduce the bug
- [ ] Find the root cause
- [ ] Fix it
- [ ] Add a regression test

## Deliverable

A fix with a test that fails without it.
""",
    "03_chore.md": """\
## Instruction

[Title]

## Tasks

- [ ] Do the work
- [ ] Check nothing else changed

## Deliverable

The chore is done and noted in the log.
""",
    "04_documentation.md": """\
## Instruction

Document [Title].

## Audience

## Tasks

- [ ] Outline
- [ ] Write a draft
- [ ] Get a review

## Deliverable

Published documentation.
""",
    "05_test.md": """\
## Instruction

Add tests for [Title].

## Tasks

- [ ] List the cases to cover
- [ ] Write the tests
- [ ] Make them pass in CI

## Deliverable

Passing tests covering the listed cases.
""",
    "06_spike.md": """\
## Instruction

Investigate [Title] and report back.

## Questions

## Tasks

- [ ] Research the options
- [ ] Build a small prototype if needed
- [ ] Write up the findings

## Deliverable

A short write-up with a recommendation.

## Time Box
""",
}


@dataclass(frozen=True)
class TemplateInfo:
    """One template file found in the templates directory."""

    id: str
    filename: str
    path: Path
    name: str
    type: TaskType | None = None


def get_templates_dir(ctx: PathContext) -> Path:
    """The templates directory in use: the first that exists, repo before global."""
    return resolve_existing_path(PathType.TEMPLATES, ctx)


def _template_type(template_id: str) -> TaskType | None:
    """Task type spelled exactly by a template id (name, label, emoji or alias)."""
    needle = template_id.strip().lower()
    for task_type, value in TYPE_VALUES.items():
        spellings = (value.name, value.label, value.emoji or "", *value.aliases)
        if needle in (s.lower() for s in spellings if s):
            return task_type
    return None


def list_templates(ctx: PathContext) -> list[TemplateInfo]:
    """List templates, ordered by filename. Other files are ignored."""
    directory = get_templates_dir(ctx)
    if not directory.is_dir():
        return []

    templates = []
    for path in sorted(directory.iterdir(), key=lambda p: p.name):
        match = TEMPLATE_FILE_RE.match(path.name)
        if not match or not path.is_file():
            continue
        template_id = match.group(2)
        task_type = _template_type(template_id)
        if task_type is not None:
            value = TYPE_VALUES[task_type]
            name = f"{value.emoji} {value.label}" if value.emoji else value.label
        else:
            name = template_id.replace("_", " ").title()
        templates.append(
            TemplateInfo(
                id=template_id, filename=path.name, path=path, name=name, type=task_type
            )
        )
    return templates


def find_template(ctx: PathContext, template_id: str) -> TemplateInfo | None:
    """Find a template by its id, or by any alias of its task type."""
    templates = list_templates(ctx)
    wanted = template_id.strip().lower()
    for info in templates:
        if info.id.lower() == wanted:
            return info
    task_type = _template_type(wanted)
    if task_type is not None:
        for info in templates:
            if info.type is task_type:
                return info
    return None


def get_template(ctx: PathContext, template_id: str) -> str | None:
    """Raw content of a template, or None if there is no such template."""
    info = find_template(ctx, template_id)
    if info is None:
        return None
    return info.path.read_text(encoding="utf-8")


def _strip_header(content: str) -> str:
    lines = content.splitlines()
    if not lines or lines[0].strip() != "---":
        return content
    for i, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            return "\n".join(lines[i + 1 :])
    return content


def _drop_title_line(content: str) -> str:
    lines = content.splitlines()
    for i, line in enumerate(lines):
        if not line.strip():
            continue
        if _TITLE_LINE_RE.match(line):
            return "\n".join(lines[:i] + lines[i + 1 :])
        break
    return content


def apply_template(
    content: str,
    title: str,
    *,
    instruction: str | None = None,
    tasks: list[str] | None = None,
    deliverable: str | None = None,
    custom_sections: Mapping[str, str] | None = None,
) -> TaskDocument:
    """Build a task document from template content.

    Title placeholders are replaced with ``title``. The template's sections
    become the document's sections; a template with no ``## `` sections
    becomes the Instruction. Explicit arguments replace the matching
    template section. Required sections are always present.
    """
    body = _TITLE_PLACEHOLDER_RE.sub(lambda _: title, _strip_header(content))
    body = _drop_title_line(body)

    document = parse_document(f"---\n---\n\n# {title}\n\n{body}")
    # Text outside any section is dropped unless the template has no sections
    document.preamble = ""
    if not document.sections and body.strip():
        document.set_section("instruction", body.strip())

    ensure_required_sections(document)
    if instruction:
        document.set_section("instruction", instruction)
    if tasks:
        document.set_checklist([ChecklistItem(done=False, text=t) for t in tasks])
    if deliverable:
        document.set_section("deliverable", deliverable)
    for name, text in (custom_sections or {}).items():
        document.set_section(name, text)
    return document


def initialize_templates(ctx: PathContext, *, overwrite: bool = False) -> list[Path]:
    """Write the default templates into the repo templates directory.

    Existing files are kept unless ``overwrite`` is set.

    Returns:
        The paths written
    """
    directory = get_templates_path(ctx)
    directory.mkdir(parents=True, exist_ok=True)
    written = []
    for filename, text in DEFAULT_TEMPLATES.items():
        path = directory / filename
        if path.exists() and not overwrite:
            continue
        path.write_text(text, encoding="utf-8")
        written.append(path)
    logger.info("Wrote %d default templates to %s", len(written), directory)
    return written
