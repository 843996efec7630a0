"""HTTP adapter: admission middleware and application factory.

    from tollgate.api.app import create_app

    app = create_app(routers=[results_router])
"""
