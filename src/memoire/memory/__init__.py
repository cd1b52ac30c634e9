"""Memory tiers: daily logs, fact ledgers, semantic index, summaries.

Layout:
    ~/.memoire/memory/
    ├── MEMORY.md                          # Global fact ledger (never prompted)
    ├── users/
    │   └── <participant>.md               # Private fact ledger per participant
    ├── daily/
    │   ├── <chat>_2026-02-18.md           # Per-chat daily log (append-only)
    │   └── archive/<chat>_2026-01-10.md   # Condensed logs past retention
    ├── summaries/
    │   └── <chat>_2026-02-18.md           # LLM summary with YAML frontmatter
    └── semantic-vectors.json              # Embedding index snapshot

Ids are sanitized before they reach a path: `123@s.whatsapp.net` → `123--s_whatsapp_net`.
"""
