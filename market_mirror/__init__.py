"""
Self-hosted mirror of VS Code extensions published as GitHub release assets.

This package is responsible for:
* Syncing .vsix packages from GitHub releases into an on-disk catalog.
* Writing a diff-stable index.json describing every mirrored extension.
* Serving that index through a gallery-compatible query API.
"""
