"""
Usage metering.

Records user activity, derives monthly active users per tenant, snapshots
them per billing period and reconciles the snapshots into billed amounts.
"""
