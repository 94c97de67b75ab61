"""SiteKeeper: a reconciling controller for the ``Website`` custom resource."""

__version__ = "0.1.0"
