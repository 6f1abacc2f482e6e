"""
Prompt composition.

Pure functions only: identical inputs always produce byte-identical
prompts. The context-size policy lives with the caller, which truncates the
file list before it reaches `build_context`.
"""

from typing import Iterable, Mapping, Union

from ai_gen_broker.storage.models import ProjectFile

NO_FILES_MARKER = "No project files provided."

BASE_PREAMBLE = (
    "You are an AI coding assistant embedded in a web IDE. "
    "Provide concise, clear, and practical responses."
)

GENERATE_INSTRUCTIONS = """INSTRUCTIONS FOR CODE GENERATION:
- Generate clean, working code with proper syntax
- Use modern best practices and secure coding patterns
- Add brief comments for complex logic
- Focus on practical, production-ready solutions
- If generating multiple files, separate them clearly
- Keep responses focused and avoid unnecessary explanations"""

EXPLAIN_INSTRUCTIONS = """INSTRUCTIONS FOR CODE EXPLANATION:
- Provide clear, step-by-step explanations
- Break down complex concepts into simple terms
- Highlight important patterns and best practices
- Mention potential issues or improvements
- Keep explanations educational but concise
- Use practical examples when helpful"""

FileLike = Union[ProjectFile, Mapping[str, str]]


def build_system_preamble(mode: str) -> str:
    """Instructional preamble for a mode; unknown modes get the base text."""
    if mode == "generate":
        return f"{BASE_PREAMBLE}\n\n{GENERATE_INSTRUCTIONS}"
    if mode == "explain":
        return f"{BASE_PREAMBLE}\n\n{EXPLAIN_INSTRUCTIONS}"
    return BASE_PREAMBLE


def _file_parts(item: FileLike):
    if isinstance(item, ProjectFile):
        return item.filename, item.content
    return item["filename"], item["content"]


def build_context(files: Iterable[FileLike]) -> str:
    """Wrap each file in a delimited block.

    Args:
        files: ProjectFile objects or mappings with filename/content keys

    Returns:
        Context section, or the explicit no-files marker for an empty list
    """
    blocks = []
    for item in files:
        filename, content = _file_parts(item)
        blocks.append(f'<file name="{filename}">\n{content}\n</file>')
    if not blocks:
        return NO_FILES_MARKER
    return "Project Context:\n\n" + "\n\n".join(blocks)


def compose(user_prompt: str, mode: str, files: Iterable[FileLike] = ()) -> str:
    """Final prompt: preamble, context, then the user turn."""
    return (
        f"{build_system_preamble(mode)}\n\n"
        f"{build_context(files)}\n\n"
        f"User: {user_prompt}\n"
        f"Assistant:"
    )
