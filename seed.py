import random
import uuid
from datetime import datetime, timedelta, timezone

from civicfeed.database import SessionLocal, engine, Base
from civicfeed.models import User, Post, Relationship, PostLike, Video
from civicfeed.models.relationship import RelationshipKind

# Create tables
Base.metadata.create_all(bind=engine)

db = SessionLocal()
rng = random.Random(42)
now = datetime.now(timezone.utc)

# Clear existing data
db.query(PostLike).delete()
db.query(Relationship).delete()
db.query(Video).delete()
db.query(Post).delete()
db.query(User).delete()

# Sample users
cells = ["8928308280fffff", "8928308283bffff", "89283082877ffff", "892830828cbffff"]
users = [
    User(
        username=f"neighbor{i}",
        display_name=f"Neighbor {i}",
        reputation=rng.choice([None, 20, 45, 70, 97]),
        embedding=[rng.uniform(-1, 1) for _ in range(8)],
        h3_index=rng.choice(cells),
    )
    for i in range(12)
]
db.add_all(users)
db.commit()

# Sample posts spread over the candidate window
topics = ["road repairs", "school board", "farmers market", "park cleanup", "library hours", "zoning"]
posts = []
for user in users:
    for _ in range(rng.randint(3, 8)):
        posts.append(Post(
            author_id=user.id,
            content=f"Update on {rng.choice(topics)}",
            tags=[rng.choice(topics)],
            embedding=[rng.uniform(-1, 1) for _ in range(8)],
            h3_index=user.h3_index,
            likes_count=rng.randint(0, 50),
            comments_count=rng.randint(0, 10),
            shares_count=rng.randint(0, 5),
            created_at=now - timedelta(hours=rng.randint(0, 24 * 20)),
        ))
db.add_all(posts)
db.commit()

# Social graph for the first user
me = users[0]
kinds = [RelationshipKind.FOLLOW, RelationshipKind.FRIEND, RelationshipKind.SUBSCRIBE, RelationshipKind.MUTE]
for other, kind in zip(users[1:], kinds * 3):
    db.add(Relationship(user_id=me.id, target_id=other.id, kind=kind))
for post in rng.sample(posts, 10):
    if post.author_id != me.id:
        db.add(PostLike(user_id=me.id, post_id=post.id))

# A video waiting to be encoded
db.add(Video(id=uuid.uuid4().hex, user_id=me.id, raw_blob_name="raw/sample.mp4"))

db.commit()
db.close()

print(f"Seeded {len(users)} users and {len(posts)} posts")
