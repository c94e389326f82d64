"""
Genera el par de claves RSA (RS256) con el que se firman y verifican los JWT.

El servicio solo necesita la clave pública; la privada queda para el
emisor de tokens y para pruebas locales:

    python scripts/generate_keys.py [--force]
"""

import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def build_key_pair(key_size: int = 2048) -> tuple[bytes, bytes]:
    """Devuelve (privada, pública) en PEM."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def write_keys(keys_dir: Path, force: bool = False) -> bool:
    keys_dir.mkdir(exist_ok=True)
    private_path = keys_dir / "private.pem"
    public_path = keys_dir / "public.pem"

    if private_path.exists() and not force:
        print(f"Las claves ya existen en {keys_dir}; use --force para regenerarlas")
        return False

    private_pem, public_pem = build_key_pair()
    private_path.write_bytes(private_pem)
    public_path.write_bytes(public_pem)
    print(f"Clave privada: {private_path}")
    print(f"Clave pública: {public_path}")
    print("\nAgregue a su .env:")
    print(f"   JWT_PRIVATE_KEY_PATH={private_path}")
    print(f"   JWT_PUBLIC_KEY_PATH={public_path}")
    return True


if __name__ == "__main__":
    write_keys(Path(__file__).parent.parent / "keys", force="--force" in sys.argv)
