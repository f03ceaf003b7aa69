from app.armory import create_app

app = create_app()
