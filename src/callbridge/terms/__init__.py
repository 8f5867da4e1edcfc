from callbridge.terms.types import Atom

__all__ = ["Atom"]
