from fors.session.session import Fors


__all__ = ["Fors"]
