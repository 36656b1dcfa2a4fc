"""Core building blocks of the fabric try-on workflow.

Architecture Overview
---------------------
1. **Configuration** (config.py):
   - Environment-based settings using Pydantic Settings
   - All settings prefixed with DRAPEWORKS_ in .env files

2. **Input handling** (files.py, validation.py, design_number.py):
   - Uploaded payload value type
   - File, free-text and design-number checks, free-text sanitizing
   - Design number formatting and auto-numbering

3. **Prompt assembly** (prompt_builder.py):
   - Garment-combination templates, fabric source lines, hard-lock suffix

4. **Generation** (generation_client.py, imaging.py):
   - Service contract, Gemini implementation, response extraction
   - Page-region crop and design-number overlay (Pillow)

5. **Usage accounting** (usage_ledger.py, ledger_store.py):
   - Cost ledger with JSON, SQLite and in-memory persistence
"""

from drapeworks.core.config import DrapeworksConfig, config

__all__ = ["DrapeworksConfig", "config"]
