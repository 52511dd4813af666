# rentdesk/utils/local_store.py
"""Almacén local en ficheros JSON.

Se usa cuando no hay base de datos configurada (``STORAGE_BACKEND = 'local'``)
o cuando la base de datos falla. Cada colección lógica es un fichero que se
lee y se escribe entero.
"""
import json
import os
import tempfile

from flask import current_app


class LocalStoreError(Exception):
    pass


def data_dir():
    folder = current_app.config['LOCAL_DATA_DIR']
    os.makedirs(folder, exist_ok=True)
    return folder


def read_json(file_name, fallback, strict=False):
    """Contenido del fichero, o ``fallback`` si no existe.

    Con ``strict=True`` un fichero ilegible o corrupto lanza ``LocalStoreError``
    en lugar de devolver ``fallback``.
    """
    path = os.path.join(data_dir(), file_name)
    try:
        with open(path, 'r', encoding='utf-8') as fh:
            data = json.load(fh)
    except FileNotFoundError:
        return fallback
    except (OSError, json.JSONDecodeError) as e:
        if strict:
            current_app.logger.error(f"Fichero local corrupto o ilegible: '{path}': {e}")
            raise LocalStoreError(f"No se pudo leer '{file_name}': {e}") from e
        current_app.logger.warning(f"No se pudo leer '{path}', se usa el valor por defecto: {e}")
        return fallback
    if strict and not isinstance(data, type(fallback)):
        current_app.logger.error(f"Fichero local con formato inesperado: '{path}'")
        raise LocalStoreError(f"Formato inesperado en '{file_name}'")
    return data


def write_json(file_name, data):
    folder = data_dir()
    path = os.path.join(folder, file_name)
    # Escritura atómica: fichero temporal + replace
    fd, tmp_path = tempfile.mkstemp(dir=folder, prefix=f".{file_name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as fh:
            json.dump(data, fh, indent=2, ensure_ascii=False, default=str)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
