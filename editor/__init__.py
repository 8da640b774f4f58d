# editor/__init__.py

# This file makes the 'editor' directory a Python package.
# Run the application from the repository root with: python -m editor.main
