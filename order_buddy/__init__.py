"""
Order Buddy — order management backend for small businesses

Packages:
    api/        JSON routes (Flask blueprint)
    core/       Store, derivation, rollups, activity log, analytics, export
    agents/     External services (order confirmation email, notification bell)
"""
