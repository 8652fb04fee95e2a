"""HTTP surface. routes.bp is registered by app.create_app()."""
