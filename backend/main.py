from uniket import create_app

app = create_app()
