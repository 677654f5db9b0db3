#!/usr/bin/env python3
"""
CLI Client for End-to-End Encryption Key Management

Provides a command-line interface for:
- Creating or restoring this device's encryption keys
- Exporting and importing password-protected key backups
- Encrypting a message for another user
- Decrypting a batch of received messages
"""

import asyncio
import json
import sys
import logging
import getpass
from pathlib import Path
from typing import Optional
from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout

from e2ee.primitives import CryptoError
from .config import ClientConfig
from .storage import LocalKeyStore
from .key_manager import KeyManager
from .directory import KeyDirectoryClient, KeyDirectoryError
from .codec import MessageCodec
from .session import EncryptionSession

HELP_TEXT = """Commands:
  /init - Restore or create your encryption keys
  /status - Show encryption status
  /backup <file> - Export a password-protected key backup
  /restore <file> - Import a key backup
  /send <username> - Encrypt a message for a user
  /decrypt <file> - Decrypt a JSON list of received messages
  /logout - Remove your keys from this device
  /reset-device - Destroy the device key (irreversible)
  /quit - Quit application"""


class KeyClient:
    """
    Interactive front end over the key manager and message codec.
    """

    def __init__(self, user_id: str, config: Optional[ClientConfig] = None):
        """
        Initialize key client.

        Args:
            user_id: Account to manage keys for
            config: Client configuration
        """
        self.config = config or ClientConfig()
        self.user_id = user_id
        self.store = LocalKeyStore(str(self.config.key_db_path))
        self.key_manager = KeyManager(self.store)
        self.directory = KeyDirectoryClient(self.config.SERVER_URL)
        self.codec = MessageCodec(self.directory, self.config.DECRYPT_TIMEOUT)
        self.session = EncryptionSession(user_id, self.key_manager, self.directory)
        self.running = False

    async def init_keys(self):
        """Restore existing keys or create and register new ones"""
        try:
            await self.session.start()
            print(f"Encryption active for {self.user_id}")
        except KeyDirectoryError as e:
            print(f"Keys stored locally but registration failed: {e}")
        except CryptoError as e:
            print(f"Failed to set up encryption: {e}")

    async def show_status(self):
        status = await self.key_manager.get_encryption_status(self.user_id)
        print(f"User: {status.user_id}")
        print(f"  Keys on this device: {'yes' if status.has_user_keys else 'no'}")
        print(f"  Device key: {'yes' if status.has_device_key else 'no'}")
        if status.key_created_at:
            print(f"  Created: {status.key_created_at}")
        if status.key_imported_at:
            print(f"  Imported: {status.key_imported_at}")

    async def export_backup(self, path: str):
        password = getpass.getpass("Backup password: ")
        if password != getpass.getpass("Confirm password: "):
            print("Passwords don't match")
            return

        try:
            backup = await self.key_manager.export_backup(self.user_id, password)
        except (ValueError, CryptoError) as e:
            print(f"Backup failed: {e}")
            return

        Path(path).write_text(backup)
        print(f"Backup written to {path}")

    async def import_backup(self, path: str):
        try:
            backup = Path(path).read_text()
        except OSError as e:
            print(f"Cannot read backup: {e}")
            return

        password = getpass.getpass("Backup password: ")
        try:
            await self.key_manager.import_backup(backup, password, self.user_id)
        except CryptoError as e:
            print(f"Import failed: {e}")
            return

        self.session.keys = await self.key_manager.restore_keys(self.user_id)
        print("Keys imported")

    async def send_message(self, recipient: str, prompt: PromptSession):
        with patch_stdout():
            text = await prompt.prompt_async(f"Message to {recipient}: ")
        if not text:
            return

        try:
            outgoing = await self.codec.encode_outgoing(text, recipient)
        except KeyDirectoryError as e:
            print(f"Cannot encrypt for {recipient}: {e}")
            return
        except CryptoError as e:
            print(f"Encryption failed: {e}")
            return

        print(json.dumps(outgoing.to_transport(), indent=2))

    async def decrypt_file(self, path: str):
        if not self.session.is_active:
            print("No keys loaded. Use /init first.")
            return

        try:
            records = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            print(f"Cannot read messages: {e}")
            return
        if not isinstance(records, list):
            print("Expected a JSON list of messages")
            return

        decoded = await self.codec.decrypt_batch(records, self.session.keys.private_key)
        for message in decoded:
            sender = message.record.get("senderId", "?")
            print(f"{sender}: {message.display_text}")

    async def logout(self):
        await self.session.logout()
        print("Keys removed from this device")

    async def reset_device(self, prompt: PromptSession):
        with patch_stdout():
            answer = await prompt.prompt_async("This makes every stored key unreadable. Type RESET to confirm: ")
        if answer.strip() != "RESET":
            print("Cancelled")
            return
        await self.key_manager.clear_device_key()
        self.session.keys = None
        print("Device key destroyed")

    async def run_interactive(self):
        """Run interactive session"""
        self.running = True
        session = PromptSession()

        print()
        print(HELP_TEXT)
        print()

        try:
            while self.running:
                try:
                    with patch_stdout():
                        user_input = await session.prompt_async(f"[{self.user_id}] > ")

                    if not user_input:
                        continue
                    await self._handle_command(user_input, session)

                except KeyboardInterrupt:
                    break
                except EOFError:
                    break
                except Exception as e:
                    print(f"Command failed: {e}")

        finally:
            self.running = False
            await self.directory.aclose()
            self.store.close()

    async def _handle_command(self, command: str, prompt: PromptSession):
        """Handle slash commands"""
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) == 2 else None

        if cmd == "/init":
            await self.init_keys()
        elif cmd == "/status":
            await self.show_status()
        elif cmd == "/backup" and arg:
            await self.export_backup(arg)
        elif cmd == "/restore" and arg:
            await self.import_backup(arg)
        elif cmd == "/send" and arg:
            await self.send_message(arg, prompt)
        elif cmd == "/decrypt" and arg:
            await self.decrypt_file(arg)
        elif cmd == "/logout":
            await self.logout()
        elif cmd == "/reset-device":
            await self.reset_device(prompt)
        elif cmd == "/quit":
            self.running = False
        elif cmd == "/help":
            print(HELP_TEXT)
        else:
            print("Unknown command. Type /help for help.")


async def main():
    """Main entry point"""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 50)
    print("End-to-End Encryption Key Manager")
    print("=" * 50)
    print()

    user_id = input("User id: ").strip()
    if not user_id:
        return

    client = KeyClient(user_id)
    await client.run_interactive()

    print("\nGoodbye!")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)
