"""Shared store, order pipeline and analytics.

Modules:
    db              SQLite connection + schema
    ledger          Order create/update/delete (derive → persist → rollup → log)
    derivation      Totals and lifecycle timestamps, before persist
    rollup          Customer total_orders/total_spent
    activity        order_activities audit trail, after commit
    customers       Customer profiles
    validation      Order/customer input checks
    search          Filtering + pagination over an order snapshot
    analytics       Windowed dashboard analytics and order summary
    export          Bulk actions and CSV export
    paths, secrets, security, startup_checks, timeutil
"""
