"""LLM prompt overrides stored in the llm_prompts table."""

from psycopg2.extensions import cursor as PgCursor

from devisly.infra.db import fetchone

SYSTEM_PROMPT_NAME = "system_prompt"


def get_active_prompt(cur: PgCursor, name: str = SYSTEM_PROMPT_NAME) -> str | None:
    """Return the text of the active prompt with this name, if any."""
    row = fetchone(
        cur,
        """
        SELECT prompt_text FROM llm_prompts
        WHERE name = %s AND is_active = true
        ORDER BY updated_at DESC
        LIMIT 1
        """,
        (name,),
    )
    if row is None or not row[0]:
        return None
    return row[0]
