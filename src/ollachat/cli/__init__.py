"""Command line front-end for ollachat."""
