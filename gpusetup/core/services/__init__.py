"""
Setup services — reconciliation logic for the GPU stack.

Layers, leaves first: paths → probe → gate → placement/profile/symlinks
→ checks → installer/uninstaller → session.
"""
