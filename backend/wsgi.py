from praxis import create_app

app = create_app()
