# mlm_engine/identity/identity_toolkit.py
"""
Identity Toolkit REST admin client (Firebase Auth compatible).
"""
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

import config
from mlm_engine.identity.base import IdentityProvider, IdentityProviderError
from mlm_engine.identity.session_tokens import SessionTokenSigner

logger = logging.getLogger(__name__)


class IdentityToolkitProvider(IdentityProvider):

    def __init__(
            self,
            projectId: str = None,
            accessToken: str = None,
            baseUrl: str = None,
            tokenSigner: SessionTokenSigner = None
    ):
        self.projectId = projectId or config.IDENTITY_PROJECT_ID
        self.accessToken = accessToken or config.IDENTITY_ACCESS_TOKEN
        self.baseUrl = (baseUrl or config.IDENTITY_TOOLKIT_URL).rstrip('/')
        self.tokenSigner = tokenSigner or SessionTokenSigner(
            config.SESSION_TOKEN_SECRET,
            config.SESSION_TOKEN_TTL
        )
        self.timeout = aiohttp.ClientTimeout(total=15)

        if not self.projectId or not self.accessToken:
            logger.critical("IDENTITY_PROJECT_ID / IDENTITY_ACCESS_TOKEN are not configured!")
            raise ValueError("Identity Toolkit credentials must be set in environment")

    async def _post(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST to v1/projects/{project}/accounts{action}"""
        url = f"{self.baseUrl}/v1/projects/{self.projectId}/accounts{action}"
        headers = {
            'Authorization': f'Bearer {self.accessToken}',
            'Content-Type': 'application/json'
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(url, json=payload, headers=headers) as response:
                    data = await response.json(content_type=None)
                    if response.status != 200:
                        message = (data or {}).get('error', {}).get('message', response.reason)
                        raise IdentityProviderError(f"Identity Toolkit {action or 'create'} failed: {message}")
                    return data or {}
        except aiohttp.ClientError as e:
            error_msg = f"Identity Toolkit transport error: {e}"
            logger.error(error_msg)
            raise IdentityProviderError(error_msg)

    async def createAccount(self, email: str, password: str, displayName: str) -> str:
        data = await self._post('', {
            'email': email,
            'password': password,
            'displayName': displayName,
            'emailVerified': False,
            'disabled': False
        })
        logger.info(f"Identity account {data['localId']} created for {email}")
        return data['localId']

    async def deleteAccount(self, accountId: str):
        await self._post(':delete', {'localId': accountId})
        logger.info(f"Identity account {accountId} deleted")

    async def getAccountByEmail(self, email: str) -> Optional[str]:
        data = await self._post(':lookup', {'email': [email]})
        users = data.get('users') or []
        return users[0]['localId'] if users else None

    async def setCustomClaims(self, accountId: str, claims: Dict):
        await self._post(':update', {
            'localId': accountId,
            'customAttributes': json.dumps(claims)
        })

    async def issueSessionToken(self, accountId: str) -> str:
        return self.tokenSigner.issue(accountId)
