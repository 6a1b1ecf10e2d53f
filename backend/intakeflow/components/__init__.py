"""
Pipeline stages.

One module per stage with an explicit input/output contract (see
`contracts.py`). AI-backed stages read their system prompt from
`/prompts/components/*.system`.
"""
