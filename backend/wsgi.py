from salonbook import create_app

app = create_app()
