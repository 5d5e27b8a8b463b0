"""Configuration, logging, errors, data model and the engine facade."""
