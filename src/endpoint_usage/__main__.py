from endpoint_usage.cli import app

app()
