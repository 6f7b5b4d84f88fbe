"""Interactive menus and click sub-commands."""
