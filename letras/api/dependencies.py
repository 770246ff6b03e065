"""Process-wide service objects shared by the routers."""

from letras.srs.session import SessionController

controller = SessionController()


def get_controller() -> SessionController:
    return controller
