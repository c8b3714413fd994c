"""Headshot order fulfilment — provider webhook reconciliation.

Packages:
    orders        — Job / Order / GeneratedAsset models and their stores
    assets        — blob copy into owned storage + asset records
    notifications — customer completion email
    webhooks      — inbound provider events: decode, verify, dedup, reconcile
"""
