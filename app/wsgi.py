from app.emslab import create_app

app = create_app()
