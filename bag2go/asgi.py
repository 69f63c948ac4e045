"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: gunicorn/uvicorn-workers) importe `bag2go.asgi:app`
  pour servir l'application FastAPI en mode ASGI.
- Toute la configuration (routes, middlewares, exceptions, lifespan) est centralisée
  dans bag2go.app_setup.factory, ce fichier ne fait qu'exposer l'instance `app`.
"""

from bag2go.app import app

if __name__ == "__main__":
    # Exécution directe utile en développement local (uvicorn standalone).
    import os
    import uvicorn
    uvicorn.run(
        "bag2go.asgi:app",
        host="0.0.0.0",  # écoute toutes interfaces (Docker/VM)
        port=int(os.getenv("PORT", "8000")),
        reload=True,     # rechargement automatique en dev
    )
