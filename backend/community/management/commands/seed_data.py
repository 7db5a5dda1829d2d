"""
Management command to seed the database with sample data.

Usage: python manage.py seed_data
"""

import random
from datetime import timedelta
from django.core.management.base import BaseCommand
from django.contrib.auth.models import User
from django.utils import timezone

from accounts.models import Profile, Role, UserRole
from community.models import Channel, Post, Comment, Vote, PollOption, PollVote
from community.services import cast_vote, create_comment


CHANNELS = [
    ('general', 'Everything hostel life'),
    ('events', 'Fests, nights and hostel meets'),
    ('mess', 'Menu, feedback and complaints'),
    ('lost-and-found', 'Lost something? Found something?'),
]

FLAIRS = ['announcement', 'question', 'discussion', 'meme', 'help', None]


class Command(BaseCommand):
    help = 'Seed the database with sample data for testing'

    def add_arguments(self, parser):
        parser.add_argument(
            '--users',
            type=int,
            default=10,
            help='Number of approved members to create'
        )
        parser.add_argument(
            '--posts',
            type=int,
            default=20,
            help='Number of posts to create'
        )
        parser.add_argument(
            '--comments',
            type=int,
            default=50,
            help='Number of comments to create'
        )
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Clear existing data before seeding'
        )

    def handle(self, *args, **options):
        if options['clear']:
            self.stdout.write('Clearing existing data...')
            PollVote.objects.all().delete()
            Vote.objects.all().delete()
            Comment.objects.all().delete()
            Post.objects.all().delete()
            Channel.objects.all().delete()
            User.objects.filter(is_superuser=False).delete()

        self.stdout.write('Creating steward...')
        steward = self._create_user('steward@hostel.local', 'Hostel Steward', role=Role.STEWARD)

        self.stdout.write('Creating members...')
        users = [
            self._create_user(f'member{i + 1}@hostel.local', f'Member {i + 1}')
            for i in range(options['users'])
        ]
        users.append(steward)

        self.stdout.write('Creating channels...')
        channels = [
            Channel.objects.get_or_create(
                name=name,
                defaults={'description': description, 'created_by': steward}
            )[0]
            for name, description in CHANNELS
        ]

        self.stdout.write('Creating posts...')
        posts = self._create_posts(users, channels, options['posts'])

        self.stdout.write('Creating comments...')
        comments = self._create_comments(users, posts, options['comments'])

        self.stdout.write('Creating votes...')
        self._create_votes(users, posts)

        self.stdout.write(self.style.SUCCESS(
            f'Successfully created:\n'
            f'  - {len(users)} users (1 steward)\n'
            f'  - {len(channels)} channels\n'
            f'  - {len(posts)} posts\n'
            f'  - {len(comments)} comments\n'
            f'  - Votes'
        ))

    def _create_user(self, email, full_name, role=Role.MEMBER):
        user, created = User.objects.get_or_create(username=email, defaults={'email': email})
        if created:
            user.set_password('password123')
            user.save(update_fields=['password'])
        Profile.objects.update_or_create(
            user=user,
            defaults={'email': email, 'full_name': full_name, 'is_approved': True}
        )
        UserRole.objects.update_or_create(user=user, defaults={'role': role})
        return user

    def _create_posts(self, users, channels, count):
        posts = []
        titles = [
            "Water cooler on 2nd floor is broken",
            "Who is up for football tonight?",
            "Mess menu feedback for this week",
            "Found a blue water bottle in the common room",
            "Hostel night planning thread",
            "Wi-Fi keeps dropping in Block B",
            "Anyone selling a used cycle?",
            "Quiet hours during exams",
        ]

        for i in range(count):
            post = Post.objects.create(
                channel=random.choice(channels),
                author=random.choice(users),
                title=f"{random.choice(titles)} #{i + 1}",
                content=f"Posting this for everyone in the hostel. ({i + 1})",
                flair=random.choice(FLAIRS),
                created_at=timezone.now() - timedelta(hours=random.randint(0, 72))
            )
            if i % 7 == 0:
                post.is_poll = True
                post.save(update_fields=['is_poll', 'updated_at'])
                PollOption.objects.bulk_create([
                    PollOption(post=post, option_text=text) for text in ('Yes', 'No', 'Maybe')
                ])
            posts.append(post)

        if posts:
            posts[0].is_pinned = True
            posts[0].save(update_fields=['is_pinned', 'updated_at'])
        return posts

    def _create_comments(self, users, posts, count):
        comments = []
        comment_texts = [
            "Same here!",
            "Reported this to the warden already.",
            "Count me in.",
            "Can you share more details?",
            "Thanks for the heads up.",
        ]

        for _ in range(count):
            post = random.choice(posts)

            # 30% chance of being a reply to an earlier comment on the same post
            parent_id = None
            existing = [c for c in comments if c.post_id == post.id]
            if existing and random.random() < 0.3:
                parent_id = random.choice(existing).id

            comments.append(create_comment(
                random.choice(users),
                post.id,
                random.choice(comment_texts),
                parent_id=parent_id
            ))
        return comments

    def _create_votes(self, users, posts):
        for post in posts:
            voters = random.sample(users, k=len(users) // 2)
            for voter in voters:
                cast_vote(voter, post.id, random.choice([1, 1, 1, -1]))
