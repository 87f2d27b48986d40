from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from .errors import ProfileError


class SecurityManager:
    """
    Manages the encryption and decryption of stored profile passwords.
    """

    def __init__(self: "SecurityManager", key_path: Path):
        """
        Initializes a new SecurityManager object.

        Args:
            key_path: File holding the Fernet key; created on first use.
        """
        self.key_path = Path(key_path)
        self._key: bytes | None = None

    @property
    def key(self: "SecurityManager") -> bytes:
        if self._key is None:
            self._key = self._load_key()
        return self._key

    def _load_key(self: "SecurityManager") -> bytes:
        """
        Loads the encryption key from the key file.
        If the file does not exist, a new key is generated and saved to the file.

        Returns:
            The encryption key.
        """
        if self.key_path.exists():
            with open(self.key_path, "rb") as f:
                return f.read().strip()
        else:
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            key = Fernet.generate_key()
            with open(self.key_path, "wb") as f:
                f.write(key)
            self.key_path.chmod(0o600)
            return key

    def encrypt_password(self: "SecurityManager", password: str) -> str:
        """
        Encrypts a password.

        Args:
            password: The password to encrypt.

        Returns:
            The encrypted password.
        """
        fernet = Fernet(self.key)
        encrypted_password = fernet.encrypt(password.encode())
        return encrypted_password.decode()

    def decrypt_password(self: "SecurityManager", encrypted_password: str) -> str:
        """
        Decrypts a password.

        Args:
            encrypted_password: The encrypted password.

        Returns:
            The decrypted password.

        Raises:
            ProfileError: If the key does not match the stored token.
        """
        fernet = Fernet(self.key)
        try:
            decrypted_password = fernet.decrypt(encrypted_password.encode())
        except InvalidToken as exc:
            raise ProfileError(
                f"Stored password cannot be decrypted with key {self.key_path}"
            ) from exc
        return decrypted_password.decode()
