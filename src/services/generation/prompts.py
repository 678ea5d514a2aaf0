"""System instruction templates, one per task kind."""

from __future__ import annotations

from schemas.generation import GenerationContext, TaskKind


OUTLINE_SYSTEM_PROMPT = """You are an expert technical book author. Generate a table of contents as a JSON array.

CRITICAL: Output COMPACT JSON with NO descriptions to avoid truncation. Use this minimal structure:
[{"id":"ch-1","title":"Chapter Title","slug":"chapter-slug","children":[{"id":"ch-1-1","title":"Sub Title","slug":"sub-slug"}]}]

Rules:
- NO description field (saves tokens)
- Short IDs: ch-1, ch-1-1, ch-2, etc.
- Slugs: lowercase with hyphens
- Keep hierarchy flat when possible (max 2 levels deep)
- Aim for 8-15 main chapters
- Output ONLY valid JSON array, no markdown, no explanation
- Ensure JSON is COMPLETE - do not truncate"""

CHAPTER_SYSTEM_PROMPT = """You are an expert technical writer creating content for the book "{book_title}".

Book Description: {book_description}

You are writing the chapter: "{chapter_title}"

CRITICAL INSTRUCTION: The chapter title defines ALL topics you MUST cover. If the title contains multiple topics (separated by "and", commas, or listed), you MUST write comprehensive sections for EACH topic. DO NOT stop after covering only the first topic.

Guidelines:
- Write in MyST Markdown format
- Use appropriate headings (## for main sections, ### for subsections)
- Include code examples with proper syntax highlighting using triple backticks and language identifiers
- Use admonitions for important notes:
  ```{{note}}
  Important information here
  ```
- Include practical examples and explanations
- Use cross-references where appropriate
- Make content accessible and educational
- Include exercises or practice sections where appropriate
{word_count_requirement}
IMPORTANT: Write the COMPLETE chapter covering ALL topics in the title. Do NOT stop early. Do NOT truncate."""

CONTENT_SYSTEM_PROMPT = """You are a technical writing assistant. Help improve and expand the provided content while maintaining MyST Markdown format.

Context:
- Book: {book_title}
- Chapter: {chapter_title}

Previous content for reference:
{previous_content}

Maintain consistency with the existing style and format."""

DEFAULT_BOOK_TITLE = "Technical Book"
DEFAULT_BOOK_DESCRIPTION = "A technical book"
DEFAULT_CHAPTER_TITLE = "Chapter"


def _word_count_requirement(target: int | None) -> str:
    if not target:
        return ""
    return (
        f"\nCRITICAL WORD COUNT REQUIREMENT: You MUST write approximately {target} "
        "words. This is NON-NEGOTIABLE. Do NOT stop until you reach this target. "
        "If you finish the main topics before reaching the word count, add more "
        "examples, exercises, detailed explanations, and practical applications.\n"
    )


def _override_word_count_note(target: int | None) -> str:
    if not target:
        return ""
    return (
        f"\n\nIMPORTANT: You MUST write approximately {target} words. "
        "This is a hard requirement - do not stop early."
    )


def build_system_prompt(task: TaskKind, context: GenerationContext | None) -> str:
    """Return the system instruction for ``task``.

    ``context.system_prompt_override`` replaces the template wholesale. For
    chapters the word-count note is still appended, since the override is
    usually a style prompt rather than a length contract.
    """
    ctx = context or GenerationContext()
    override = (ctx.system_prompt_override or "").strip()

    if task is TaskKind.OUTLINE:
        return override or OUTLINE_SYSTEM_PROMPT

    if task is TaskKind.CHAPTER:
        if override:
            return f"{override}{_override_word_count_note(ctx.target_word_count)}"
        return CHAPTER_SYSTEM_PROMPT.format(
            book_title=ctx.book_title or DEFAULT_BOOK_TITLE,
            book_description=ctx.book_description or DEFAULT_BOOK_DESCRIPTION,
            chapter_title=ctx.chapter_title or DEFAULT_CHAPTER_TITLE,
            word_count_requirement=_word_count_requirement(ctx.target_word_count),
        )

    if override:
        return override
    return CONTENT_SYSTEM_PROMPT.format(
        book_title=ctx.book_title or DEFAULT_BOOK_TITLE,
        chapter_title=ctx.chapter_title or DEFAULT_CHAPTER_TITLE,
        previous_content=ctx.previous_content or "No previous content",
    )
