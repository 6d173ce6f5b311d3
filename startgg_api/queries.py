"""GraphQL documents sent to the start.gg API."""

from typing import Final

GET_TOURNAMENT: Final = """
query GetTournament($slug: String!) {
  tournament(slug: $slug) {
    id
    name
    slug
    startAt
    endAt
    state
    events {
      id
      name
      numEntrants
      state
    }
  }
}
"""

GET_TOURNAMENTS_BY_OWNER: Final = """
query GetTournamentsByOwner($page: Int!, $perPage: Int!) {
  currentUser {
    tournaments(query: { page: $page, perPage: $perPage }) {
      pageInfo {
        total
        totalPages
      }
      nodes {
        id
        name
        slug
        startAt
        endAt
        state
        events {
          id
          name
          numEntrants
          state
        }
      }
    }
  }
}
"""

GET_EVENT_SETS: Final = """
query GetEventSets($eventId: ID!, $page: Int!, $perPage: Int!) {
  event(id: $eventId) {
    sets(page: $page, perPage: $perPage, sortType: STANDARD) {
      pageInfo {
        total
        totalPages
      }
      nodes {
        id
        state
        fullRoundText
        identifier
        round
        winnerId
        slots {
          entrant {
            id
            name
            participants {
              user {
                id
                slug
              }
            }
          }
          standing {
            stats {
              score {
                value
              }
            }
          }
        }
      }
    }
  }
}
"""

GET_EVENT_ENTRANTS: Final = """
query GetEventEntrants($eventId: ID!, $page: Int!, $perPage: Int!) {
  event(id: $eventId) {
    entrants(query: { page: $page, perPage: $perPage }) {
      pageInfo {
        total
        totalPages
      }
      nodes {
        id
        name
        participants {
          user {
            id
            slug
          }
        }
      }
    }
  }
}
"""

REPORT_SET: Final = """
mutation ReportSet($setId: ID!, $winnerId: ID!) {
  reportBracketSet(setId: $setId, winnerId: $winnerId) {
    id
    state
  }
}
"""
