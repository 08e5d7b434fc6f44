"""
商户 Webhook 投递
"""
from .client import HttpWebhookSender, sign_payload

__all__ = ["HttpWebhookSender", "sign_payload"]
