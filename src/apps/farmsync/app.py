import typer

from apps.farmsync.aws import app as aws
from apps.farmsync.uploads import app as uploads

app = typer.Typer(help="farmsync artifact upload command line interface")

app.add_typer(aws)
app.add_typer(uploads)
