import os
import pickle
import base64
import codecs
from dataclasses import replace
from datetime import datetime
from email import policy
from email.header import decode_header
from email.parser import BytesParser
from typing import Dict, Iterable, List, Optional

from dateutil.parser import parse as parse_date
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import ProcessorConfig
from models.email import Email
from models.errors import ConnectivityError, FolderNotFoundError, MessageActionError

# Read, insert, label and trash; no permanent deletes
SCOPES = ['https://www.googleapis.com/auth/gmail.modify']
SYSTEM_LABELS = {'INBOX', 'TRASH', 'SPAM', 'SENT', 'DRAFT', 'UNREAD', 'STARRED', 'IMPORTANT'}
# Upper bound the Gmail API accepts for maxResults on a single page
PAGE_SIZE = 500


def _known_charset(charset: Optional[str]) -> str:
    """Returns `charset` if Python has a codec for it, else utf-8."""
    if not charset:
        return 'utf-8'
    try:
        codecs.lookup(charset)
    except LookupError:
        return 'utf-8'
    return charset


class GmailClient:
    """Mailbox access for one shared mailbox. Folders are Gmail labels."""

    def __init__(self, config: ProcessorConfig, service=None):
        self.config = config
        self.user_id = config.mailbox
        self.service = service if service is not None else self.authenticate()
        self._labels: Dict[str, str] = {}

    def authenticate(self):
        """
        Builds the Gmail service. A service account is impersonating the
        mailbox when one is configured; otherwise the installed-app OAuth flow
        runs once and its token is cached on disk.
        """
        try:
            return self._build_service()
        except (OSError, ValueError, GoogleAuthError, pickle.UnpicklingError) as e:
            raise ConnectivityError(f"Could not authenticate to mailbox {self.config.mailbox}: {e}") from e

    def _build_service(self):
        if self.config.service_account_file:
            creds = service_account.Credentials.from_service_account_file(
                self.config.service_account_file, scopes=SCOPES
            ).with_subject(self.config.mailbox)
            return build('gmail', 'v1', credentials=creds)

        creds = None
        token_file = self.config.token_file
        if os.path.exists(token_file):
            with open(token_file, 'rb') as token:
                creds = pickle.load(token)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                flow = InstalledAppFlow.from_client_secrets_file(self.config.credentials_file, SCOPES)
                creds = flow.run_local_server(port=0)

            with open(token_file, 'wb') as token:
                pickle.dump(creds, token)

        return build('gmail', 'v1', credentials=creds)

    def resolve_labels(self, names: Iterable[str]) -> Dict[str, str]:
        """
        Maps folder names to label ids with a single labels.list call.
        Exact names win over case-insensitive ones. Names that do not exist
        are left out of the result; resolved ids are remembered for the run.
        """
        wanted = [name for name in dict.fromkeys(names) if name]
        pending = []
        for name in wanted:
            if name in self._labels:
                continue
            if name.upper() in SYSTEM_LABELS:
                self._labels[name] = name.upper()
            else:
                pending.append(name)

        if pending:
            try:
                resp = self.service.users().labels().list(userId=self.user_id).execute()
            except (HttpError, OSError) as e:
                raise ConnectivityError(f"Error listing folders of {self.user_id}: {e}") from e
            labels = resp.get('labels', [])
            for name in pending:
                found = next((lbl for lbl in labels if lbl.get('name') == name), None)
                if found is None:
                    found = next((lbl for lbl in labels if lbl.get('name', '').lower() == name.lower()), None)
                if found is not None:
                    self._labels[name] = found['id']

        return {name: self._labels[name] for name in wanted if name in self._labels}

    def fetch_emails(self, folder: str, limit: int) -> List[Email]:
        """
        Fetches at most `limit` messages from `folder`, oldest first.
        The API lists newest first, so the batch is reversed before returning.
        """
        label_id = self.resolve_labels([folder]).get(folder)
        if label_id is None:
            raise FolderNotFoundError(f"Folder '{folder}' not found in mailbox {self.user_id}")

        emails_list = []
        try:
            ids: List[str] = []
            page_token = None
            while len(ids) < limit:
                response = self.service.users().messages().list(
                    userId=self.user_id,
                    labelIds=[label_id],
                    maxResults=min(limit - len(ids), PAGE_SIZE),
                    pageToken=page_token
                ).execute()
                ids.extend(m['id'] for m in response.get('messages', []))
                page_token = response.get('nextPageToken')
                if not page_token:
                    break

            for mid in ids[:limit]:
                msg = self.service.users().messages().get(
                    userId=self.user_id,
                    id=mid,
                    format='full'
                ).execute()
                email = self._parse_message(msg)
                if email:
                    emails_list.append(email)
        except (HttpError, OSError) as e:
            raise ConnectivityError(f"Error fetching messages from '{folder}': {e}") from e

        emails_list.reverse()
        return emails_list

    def _get_header_value(self, headers, name):
        """Helper to safely extract and decode a specific header value."""
        for header in headers:
            if header['name'].lower() == name.lower():
                decoded = decode_header(header['value'])
                value = ''.join([
                    part.decode(_known_charset(charset), errors='ignore')
                    if isinstance(part, bytes) else part
                    for part, charset in decoded
                ])
                return value.strip()
        return None

    def _get_received_at(self, headers) -> Optional[datetime]:
        """Parses the Date header; an unreadable date never costs the message."""
        date_str = self._get_header_value(headers, 'Date')
        if not date_str:
            return None
        try:
            return parse_date(date_str)
        except (ValueError, OverflowError):
            return None

    def _get_message_body(self, payload):
        """Helper to extract the plain text body from the message payload."""
        parts = payload.get('parts', [])

        for part in parts:
            if part.get('mimeType') == 'text/plain':
                data = part['body'].get('data')
                if data:
                    return base64.urlsafe_b64decode(data).decode('utf-8', errors='ignore')
            # multipart/alternative nested inside multipart/mixed
            if part.get('parts'):
                nested = self._get_message_body(part)
                if nested:
                    return nested

        if payload.get('body') and payload['body'].get('data'):
            data = payload['body']['data']
            return base64.urlsafe_b64decode(data).decode('utf-8', errors='ignore')

        return ""

    def _parse_message(self, msg: dict) -> Optional[Email]:
        """Converts raw Gmail API dict into the standardized Email dataclass."""
        try:
            headers = msg['payload']['headers']
            label_ids = msg.get('labelIds', [])

            return Email(
                id=msg['id'],
                thread_id=msg.get('threadId', ''),
                from_address=self._get_header_value(headers, 'From') or '',
                subject=self._get_header_value(headers, 'Subject') or '',
                body_text=self._get_message_body(msg['payload']),
                received_at=self._get_received_at(headers),
                is_read='UNREAD' not in label_ids,
                label_ids=tuple(label_ids)
            )
        except (KeyError, ValueError, LookupError, UnicodeError) as e:
            print(f"Warning: could not parse message {msg.get('id', 'Unknown')}: {e}")
            return None

    def tag_subject(self, email: Email, marker: str) -> Email:
        """
        Prefixes the subject with `marker`. Gmail messages cannot be edited in
        place, so a copy with the new subject is inserted into the same thread
        and labels and the original goes to the trash. Returns the new Email.
        """
        new_subject = marker + (email.subject or '')
        messages = self.service.users().messages()
        try:
            raw = messages.get(userId=self.user_id, id=email.id, format='raw').execute()['raw']
            raw_bytes = base64.urlsafe_b64decode(raw + '=' * (-len(raw) % 4))
            message = BytesParser(policy=policy.default).parsebytes(raw_bytes)
            del message['Subject']
            message['Subject'] = new_subject

            body = {
                'raw': base64.urlsafe_b64encode(message.as_bytes()).decode('ascii'),
                'threadId': email.thread_id,
                'labelIds': list(email.label_ids),
            }
            inserted = messages.insert(userId=self.user_id, body=body, internalDateSource='dateHeader').execute()
        except (HttpError, OSError, KeyError, ValueError) as e:
            raise MessageActionError(f"Error tagging subject of {email.id}: {e}") from e

        try:
            messages.trash(userId=self.user_id, id=email.id).execute()
        except (HttpError, OSError) as e:
            # The untagged original is still in place, so the tagged copy must go
            self._discard_copy(inserted.get('id'))
            raise MessageActionError(f"Error trashing original {email.id} after tagging: {e}") from e

        return replace(email, id=inserted['id'], subject=new_subject)

    def _discard_copy(self, copy_id: Optional[str]):
        if not copy_id:
            return
        try:
            self.service.users().messages().trash(userId=self.user_id, id=copy_id).execute()
        except (HttpError, OSError) as e:
            print(f"Warning: tagged copy {copy_id} could not be trashed and may be logged again: {e}")

    def mark_as_read_unread(self, email_id: str, mark_as_read: bool):
        """Marks an email as read or unread via Gmail API."""
        body = {}
        if mark_as_read:
            body['removeLabelIds'] = ['UNREAD']
        else:
            body['addLabelIds'] = ['UNREAD']
        try:
            self.service.users().messages().modify(
                userId=self.user_id,
                id=email_id,
                body=body
            ).execute()
        except (HttpError, OSError) as e:
            raise MessageActionError(f"Error modifying read status for {email_id}: {e}") from e

    def move_message(self, email_id: str, label_id: str, from_label_id: str = 'INBOX'):
        """Moves a message to another folder by swapping its labels."""
        body = {
            'addLabelIds': [label_id],
            'removeLabelIds': [from_label_id]
        }
        try:
            self.service.users().messages().modify(
                userId=self.user_id,
                id=email_id,
                body=body
            ).execute()
        except (HttpError, OSError) as e:
            raise MessageActionError(f"Error moving message {email_id}: {e}") from e
