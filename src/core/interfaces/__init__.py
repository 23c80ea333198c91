"""Contratos del Core.

`clients` describe a los colaboradores externos y `procedure` el ciclo
prepare/summarize/execute que el orquestador recorre.
"""
