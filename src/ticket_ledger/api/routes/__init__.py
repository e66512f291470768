"""Router modules, one per resource; see :mod:`.register`."""
