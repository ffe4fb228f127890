from app.aneti import create_app

app = create_app()
