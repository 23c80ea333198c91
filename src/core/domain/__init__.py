"""Dominio de la flota: servicios, instancias, servidores, imágenes y cambios.

Solo modelos Pydantic y el selector de imagen; nada de I/O.
"""
