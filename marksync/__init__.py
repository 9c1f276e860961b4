import click
from flask import Flask

from marksync.api import api_bp
from marksync.config import Config
from marksync.extensions import db
from marksync.models import User


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)

    app.register_blueprint(api_bp)

    @app.cli.command("init-db")
    def init_db_command():
        db.create_all()
        print("Initialized MarkSync database.")

    @app.cli.command("create-user")
    @click.argument("username")
    @click.argument("password")
    @click.option("--email", default=None)
    @click.option("--full-name", default=None)
    @click.option("--avatar-url", default=None)
    def create_user_command(username, password, email, full_name, avatar_url):
        if User.query.filter_by(username=username).first():
            raise click.ClickException(f"username {username!r} already exists")
        user = User(
            username=username,
            email=email,
            full_name=full_name,
            avatar_url=avatar_url,
            is_active=True,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        print(f"Created user {username} ({user.id}).")

    with app.app_context():
        db.create_all()

    return app
