# cardbank

Building blocks for a small card-banking backend. Each piece takes its collaborators as
constructor arguments: client objects for the other services, a DB-API connection in the
qmark parameter style (for example `sqlite3`), and a Redis client. You can wire them to real
backends, or to in-memory stand-ins in tests.

## What is in the package

- `cardbank.gateway.ApiGateway` answers three kinds of request by calling the backing services:
  - balance lookups (`get_balance`);
  - account feeds (`get_feed`);
  - card freezes (`freeze_card`).

  Each method returns an `HttpResult`, which holds an HTTP status and a JSON-ready body.
- `cardbank.routes.DiscoHandlers` handles payment sessions, payment estimates and wallet
  creation through a payment-gateway client.
- `cardbank.routes.create_app(gateway, disco)` serves both of the above as a Flask application.
- `cardbank.cards.CardsService` creates cards, reads them back and changes their status.
  - `cardbank.cards.create_app(service)` serves it over HTTP.
  - `cardbank.cards.init_schema(db)` creates the `cards` table.
  - If the service has a publisher such as `cardbank.events.RedisStreamPublisher`, it publishes
    creations to the `card:created` Redis stream and status changes to `card:status_changed`.
- `cardbank.card_api.CardApi` passes card authorisation requests to a card-processing client.
  `cardbank.card_api.create_app(api)` serves it at `POST /cardAuth`.
- `cardbank.card_processing.CardProcessingService` authorises a card transaction in three steps:
  1. It checks that the card is `ACTIVE`.
  2. It asks the balance client to authorise the debit.
  3. It records the transaction with status `AUTHORIZED`.
- `cardbank.apns` handles push notifications:
  - `DeviceRegistry` stores device tokens per user. `init_schema(db)` creates its `devices`
    table, and `create_app(registry)` serves `POST /devices`.
  - `NotificationConsumer` reads events from the `feed:item.created` stream, with consumer
    group `apns-consumer-group`, and looks up each feed item. It then passes the item's
    content to a sender for every device of the item's account.

## Errors

Calls between services signal failure by raising `cardbank.rpc.RpcError`. Each error carries
a `cardbank.rpc.StatusCode` and a message. Its string form reads
`rpc error: code = NotFound desc = ...`.

`cardbank.rpc.http_status_for(code, allowed)` maps a code to an HTTP status. It decides as
follows:

- If `allowed` is a mapping, it uses the status the mapping gives for that code.
- If `allowed` is an iterable of codes and the code is in it, it uses the usual status for the
  code: `NOT_FOUND` becomes 404 and `INVALID_ARGUMENT` becomes 400.
- Every other code maps to 500.

Each HTTP layer chooses which codes it passes through with their message:

| Layer | Passed through | Other codes |
| --- | --- | --- |
| gateway and cards API | `NOT_FOUND` → 404, `INVALID_ARGUMENT` → 400, where the endpoint allows it | 500 |
| card authorisation API | both `NOT_FOUND` and `INVALID_ARGUMENT` → 400 | 500 |

## Messages

`cardbank.messages` defines the request and response dataclasses:

- `Card`, `FeedItem`, `Transaction`, `TransactionInput` and `MerchantData`;
- `BalanceResponse` and `DebitResult`;
- `CardAuthRequest` and `CardAuthReply`;
- the payment-session types.

Two functions convert them:

- `to_dict(message)` gives the JSON-ready dict and leaves out zero-valued fields.
- `from_dict(cls, data)` builds a message from decoded JSON. It ignores unknown keys and
  matches keys case-insensitively. It raises `TypeError` when a value has the wrong type.

## Example: the cards service

```python
import sqlite3

from cardbank.cards import CardsService, create_app, init_schema
from cardbank.events import RedisStreamPublisher

db = sqlite3.connect(":memory:", check_same_thread=False)
init_schema(db)
service = CardsService(db, RedisStreamPublisher(redis_client))  # or publisher=None
app = create_app(service)
```

`redis_client` can be any object with an `xadd(stream, fields)` method. The application has
three routes:

- `POST /cards` with `{"user_id": ...}` creates a card and returns 201.
- `GET /cards/<id>` returns a card, or 404 if there is none.
- `PATCH /cards/<id>/status` with `{"status": ...}` changes the status. The status must be one
  of `ACTIVE`, `INACTIVE`, `FROZEN` or `CLOSED`; anything else returns 400.

## Example: the API gateway

```python
from cardbank.gateway import ApiGateway
from cardbank.routes import DiscoHandlers, create_app

gateway = ApiGateway(balance, feed, transactions, merchants, cards)
app = create_app(gateway, DiscoHandlers(disco))
```

### Routes

The gateway endpoints:

- `GET /account/balance/<account_id>`
- `GET /feed/<account_id>?limit=&before_id=`
- `POST /cards/<card_id>/freeze`

The payment endpoints:

- `POST /payments/disco/session`
- `GET /payments/disco/session/<session_id>`
- `GET /payments/disco/sessions?status=&limit=&cursor=`
- `POST /payments/disco/estimate`
- `POST /payments/disco/wallet`

### Feed enrichment

The feed endpoint adds details to each `TRANSACTION` item: the transaction itself and the
transaction's merchant. If looking up a transaction or a merchant fails, the item is still
returned, just without those details.

### Authenticated user

An authentication layer can store the user id in the WSGI environ under
`cardbank.routes.USER_ID_ENVIRON_KEY`. When it does, that user id replaces the one in the body
for session and wallet creation. For session listing, the `user_id` query parameter is used
only when no user id has been stored.

## What the package does not do

- **No command-line entry point.** The package does not start any servers. You build the
  Flask applications and run them under a WSGI server of your choice.
- **No network clients for the backing services.** It has no clients for the balance, feed,
  transactions, merchant, cards, card-processing or payment-gateway services. You supply
  objects with the methods described in each class's docstring.
- **No balance, feed, transactions or merchant services.**
- **No real push delivery.** `LogNotificationSender` only writes each notification to the log;
  delivering to devices is left to a sender you provide.