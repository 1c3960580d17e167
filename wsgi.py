import os

from app.app import create_app

# Entorno tomado de FLASK_ENV ("development" si no está definido)
app = create_app(os.getenv("FLASK_ENV", "default"))

if __name__ == "__main__":
    # Ejecución directa para pruebas locales; gunicorn carga `wsgi:app`
    app.run(host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "5000")), use_reloader=False)
