# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    get_database_url,
    get_valkey_url,
    get_supabase_config,
    get_email_config,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.email_client import BrevoEmailClient, EmailDeliveryError
from clients.supabase_client import SupabaseIdentityProvider, create_supabase_clients
