"""OAuth Gateway - Multi-tenant delegated login service.

Lets many tenant applications delegate login to third-party identity
providers through one login/callback contract:
- WeChat, QQ, Douyin, DingTalk, Weibo and Alipay adapters
- Signed, expiring OAuth state
- Per-owner daily and monthly quotas tied to subscription plans
- Cached tenant configuration
"""

__version__ = "1.0.0"
__author__ = "OAuth Gateway Contributors"
