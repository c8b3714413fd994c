"""Provider webhook intake — generation-job reconciliation.

Each delivery is signature-verified, decoded into a typed event,
deduplicated and reconciled against local Job / Order / Asset state.
"""
