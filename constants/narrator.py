import os

# ─────────────────────────────────────────────
# CONSTANTS: NARRATIVE GENERATION
# ─────────────────────────────────────────────

NARRATOR_MODEL       = os.environ.get("STATWISE_NARRATOR_MODEL", "llama-3.3-70b-versatile")
NARRATOR_TEMPERATURE = 0.3
NARRATOR_MAX_TOKENS  = 1000
