"""Resource routers mounted under /api by trackbit.app.create_app()."""
